from FaceAlignment import *

if __name__=='__main__':
    imgs, gt_shapes, scalings=LoadImageList('./300w_cropped', './300w_cropped/test_img_list')
    bboxes=[ChooseRect([], shape, img.shape)[0] for img, shape in zip(imgs, gt_shapes)]
    model=LoadModel('cascade-'+str(param_cascade_num))
    test_shapes=[Shape2Image(model.initial_shape, bboxes[i]) for i in range(len(imgs))]
    print('Initial Error:', ComputeError(test_shapes, gt_shapes))
    stages=[model.StagedPredict(imgs[i], bboxes[i]) for i in range(len(imgs))]
    for i in range(len(model.stages)):
        t1=time.time()
        test_shapes=[next(s) for s in stages]
        print('Stage', i+1, 'Error:', ComputeError(test_shapes, gt_shapes), 'use:', time.time()-t1, 's')
